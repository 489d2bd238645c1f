from perfbench.main import main

raise SystemExit(main())
