"""
Package entry point for the Offer Analyst key service.
"""
import sys


def run_main():
    """Start the service, reporting startup errors before exiting."""
    try:
        from .main import main
        main()
    except Exception as e:
        import traceback
        print(f"FATAL: {type(e).__name__}: {e}", flush=True, file=sys.stderr)
        traceback.print_exc(file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    run_main()
