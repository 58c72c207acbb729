"""
Theurgy - Command implementations for the abstractkit CLI.

Each module groups related top-level CLI commands:
- send:  Send native currency (single or batch)
- sign:  Sign messages and verify signatures
- watch: Stream new heads, pending transactions or contract events
"""
