# This module handles Context engineering

# +---------------------+
# |      Memory         |   (Persistent, embedded, per table)
# |---------------------|
# | Conversation logs   |
# | Knowledge fragments |
# | Cached embeddings   |
# +---------------------+

# +---------------------+
# |      Character      |   (Static, shuffled per turn)
# |---------------------|
# | Bio / lore          |
# | Examples / style    |
# +---------------------+

#    \    /
#     \  /
#      \/
# +------------------------------+
# |           State              |   (Composed for one message)
# |------------------------------|
# | Actors, goals, recent msgs   |
# | Relevant knowledge           |
# | Actions / evaluators         |
# | Provider snippets            |
# +------------------------------+
#         |
#         v
#   [template -> model -> action]
