"""
Entry point for running scope_gate as a module.

Allows running the ScopeGate server via:
    python -m scope_gate
"""

from scope_gate.server import main

if __name__ == "__main__":
    main()
