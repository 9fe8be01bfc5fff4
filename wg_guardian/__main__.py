from wg_guardian.runner import main

raise SystemExit(main())
