from frida_mgr.cli.main import main

raise SystemExit(main())
