#!/usr/bin/env python3
"""CLI entry point for the ACME companion.

Starts the challenge server on port 80 together with Docker polling,
the acquisition queue and the expiry sweep.
"""

from acme_companion.main import main

if __name__ == "__main__":
    main()
