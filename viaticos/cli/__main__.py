from viaticos.cli.main import main

raise SystemExit(main())
