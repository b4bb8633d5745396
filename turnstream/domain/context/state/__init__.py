# State = what a conversation needs to start its next turn.

# A turn is written here once it ends, complete or errored:

# The full message list, history included

# The final status and any error text

# The container id the provider handed out, reused on the next turn

# Cancelled turns are never written; the conversation resumes from the last stored turn.
