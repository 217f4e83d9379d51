"""
Main entry point for EmotiFriend.

Usage:
    python main.py                   # Same as `python -m emotifriend`
    python main.py --user alice      # Saved conversation for "alice"
"""

from emotifriend.app import main

if __name__ == "__main__":
    main()
