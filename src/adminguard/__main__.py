"""Admin Guard CLI.

Usage:
    python -m adminguard status            # Configuration and policy
    python -m adminguard init-db           # Create tables
    python -m adminguard accounts          # List admin two-factor records
    python -m adminguard grant USER        # Add to admin list
    python -m adminguard provision USER    # Generate and show secret once
    python -m adminguard unblock USER      # Clear block and counter
    python -m adminguard revoke USER       # Remove from admin list
    python -m adminguard gen-key           # New master key for secrets at rest
    python -m adminguard server            # Start the API (uvicorn)
"""

from adminguard.cli import main

if __name__ == "__main__":
    main()
