"""
A trio bot that watches a Nostr relay for /run and /rerun
commands, runs the submitted code on a Piston execution
backend, and replies with the output in the same thread.
"""
