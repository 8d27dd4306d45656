from __future__ import annotations

"""
Thin entrypoint for the tag tracker API server (jobs run inside it).

  WORKER_ENABLED=false python -m tagtracker.server   # API only
"""

from tagtracker.web.api import run_server


def main() -> None:
    run_server()


if __name__ == "__main__":
    main()
