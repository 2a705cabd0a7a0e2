"""
Main entry point for the AgentDispatch CLI

This allows running the CLI with: python -m agentdispatch
"""
from .cli import main

if __name__ == "__main__":
    main()
