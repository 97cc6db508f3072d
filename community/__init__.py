"""
Learner community backend.

Buddy pairing, groups, live training sessions and chat relay.
"""
