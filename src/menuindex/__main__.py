from menuindex.cli import main

raise SystemExit(main())
