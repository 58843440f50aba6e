from chaosload.cli import main

raise SystemExit(main())
