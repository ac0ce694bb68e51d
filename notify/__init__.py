"""notify/ -- Out-of-band delivery of one-time codes.

Layer rule: notify/ imports only stdlib and core/.
"""
