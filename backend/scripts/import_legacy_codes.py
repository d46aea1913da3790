# backend/scripts/import_legacy_codes.py
"""
Import first-generation single client codes.

Input CSV columns: project_id, client_code, active (optional, default true).
Imported rows keep the plaintext until first use, when they are re-stored
as a keyed hash.

    python scripts/import_legacy_codes.py legacy_codes.csv
"""

import csv
import sys
from pathlib import Path

# --- Ensure the backend root (where `portal/` lives) is on sys.path ---
BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from portal.core.errors import NotFound  # noqa: E402
from portal.db.session import SessionLocal  # noqa: E402
from portal.services.credential_store import CredentialStore  # noqa: E402


def _truthy(v: str) -> bool:
    return (v or "true").strip().lower() in {"1", "true", "yes", "y", "on"}


def main(path: str) -> int:
    imported = skipped = 0
    db = SessionLocal()
    try:
        store = CredentialStore(db)
        with open(path, newline="") as fh:
            for row in csv.DictReader(fh):
                project_id = (row.get("project_id") or "").strip()
                try:
                    created = store.import_legacy(
                        project_id,
                        row.get("client_code") or "",
                        active=_truthy(row.get("active", "")),
                    )
                except NotFound:
                    print(f"[SKIP] unknown project_id={project_id}")
                    skipped += 1
                    continue
                if created is None:
                    skipped += 1
                else:
                    imported += 1
    finally:
        db.close()

    print(f"[OK] imported={imported} skipped={skipped}")
    return 0


if __name__ == "__main__":
    if len(sys.argv) != 2:
        print("usage: import_legacy_codes.py <csv>")
        sys.exit(2)
    sys.exit(main(sys.argv[1]))
