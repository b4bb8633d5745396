# This module holds what outlives a single provider stream

# +---------------------+
# |      Memory         |   (Persistent, per user, quota bound)
# |---------------------|
# | Files in /memories  |
# | Directory listings  |
# | Usage accounting    |
# +---------------------+

# +---------------------+
# |      State          |   (Per conversation, written at turn end)
# |---------------------|
# | Completed turns     |
# | Message history     |
# | Container id        |
# +---------------------+

#    \    /
#     \  /
#      \/
# +------------------------------+
# |         Next turn            |
# |------------------------------|
# | History + user message       |
# | Tool definitions             |
# | Reused container id          |
# +------------------------------+
#         |
#         v
#   [provider stream / tool call]
