# scripts/lookup_order.py
# Usage: python scripts/lookup_order.py <external_id> [<external_id> ...]

import os, sys

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
sys.path.insert(0, ROOT)

from config import load_settings
from db import StateStore
from hasher import hash_order_id


def main(argv) -> int:
    if not argv:
        print("usage: lookup_order.py <external_id> [<external_id> ...]")
        return 2

    store = StateStore(load_settings().state_db_path)

    for external_id in argv:
        hashed = hash_order_id(external_id)
        state = store.get_by_external_id(external_id)
        by_hash = store.get_by_hash(hashed)

        print(f"Order {external_id}")
        print(f"  hash            = {hashed}")
        if state is None:
            print("  state           = (none)")
        else:
            print(f"  pos_order_id    = {state.pos_order_id}")
            print(f"  last_status     = {state.last_status_sent or 'N/A'}")
            print(f"  pulled_at       = {state.order_pulled_at}")
            print(f"  last_updated_at = {state.last_updated_at}")

        # Same hash, different order: the POS reference cannot tell them apart
        if by_hash is not None and by_hash.external_id != external_id:
            print(f"  !! hash also held by order {by_hash.external_id}")

    return 0


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
