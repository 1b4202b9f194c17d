from logviewer_service.cli import main

raise SystemExit(main())
