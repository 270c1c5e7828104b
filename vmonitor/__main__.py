from vmonitor.services.reconciler.server import main

if __name__ == "__main__":  # pragma: no cover - CLI entry
    main()
