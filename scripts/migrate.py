from __future__ import annotations

from dgat.apps.migrator import main


if __name__ == "__main__":
    # Same entry point as the dgat-migrate console script.
    raise SystemExit(main())
