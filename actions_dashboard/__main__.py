"""Allow running the server via ``python -m actions_dashboard``."""

from actions_dashboard.main import main

main()
