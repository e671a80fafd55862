from nutribot.cli import main

raise SystemExit(main())
