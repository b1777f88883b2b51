#!/usr/bin/env python3
import sys

print("Running preflight check...")
try:
    import wabridge.main
    print("Import wabridge.main: OK")

    from wabridge.settings import settings
    missing = settings.validate()
    if missing:
        print("Configuration: MISSING " + ", ".join(missing))
        sys.exit(1)
    print("Configuration: OK")

    if not settings.N8N_WEBHOOK_URL:
        print("[WARN] N8N_WEBHOOK_URL is empty: inbound messages will not be forwarded.")

    if "--probe" in sys.argv[1:]:
        from wabridge.errors import StoreError
        from wabridge.session.credential_store import CredentialStore
        from wabridge.store.blob_store import build_blob_store
        store = CredentialStore(build_blob_store(settings), settings.SESSION_BUCKET, settings.SESSION_FILE)
        try:
            raw = store.download()
        except StoreError as e:
            print(f"Blob store probe FAILED: {e}")
            sys.exit(1)
        print(f"Blob store probe: OK (session {'present' if raw else 'absent'})")

    print("Preflight check passed.")
    sys.exit(0)
except Exception as e:
    print(f"Preflight check FAILED: {e}")
    import traceback
    traceback.print_exc()
    sys.exit(1)
