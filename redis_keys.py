REDIS_META_KEY = "room:meta:{room_id}" # room id - hash holding the room record
REDIS_OPEN_ROOMS_KEY = "game:open:{slug}" # game slug - sorted set of waiting room ids, scored by created_at
REDIS_ROOM_CHANNEL = "room:channel:{room_id}" # room id - pub/sub channel for room changes
REDIS_GAME_CHANNEL = "game:channel:{slug}" # game slug - pub/sub channel for open room list changes
REDIS_INVITE_KEY = "room:invite:{token}" # invite token - room id, expires with the invite

# **Example `room:meta:{id}` hash fields**
# - `id` = `{roomId}`
# - `gameSlug` = game slug
# - `players` = json list of identities
# - `playerNames` = json list of display names, same order as `players` ("" when unknown)
# - `currentTurn` = identity
# - `gameState` = json object, opaque
# - `status` = waiting | playing | finished
# - `winner` = identity or "draw" (absent until reported)
# - `createdBy` = identity
# - `createdAt` / `updatedAt` = milliseconds from the Redis server clock
