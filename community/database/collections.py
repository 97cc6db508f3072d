"""
Community collection names.

Services receive the Motor database and address collections through
these names so that tests can route them to separate mocks.
"""

USERS = "users"
BUDDY_PAIRS = "buddypairs"
BUDDY_SLOTS = "buddyslots"
GROUPS = "communitygroups"
GROUP_MEMBERSHIPS = "groupmemberships"
TRAINING_SESSIONS = "trainingsessions"
