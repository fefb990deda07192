"""
Redis Lua scripts for session rotation.

The rotation lock is taken with ``SET key owner NX EX ttl``; releasing it
must only delete the key while it still holds this caller's owner token,
otherwise a slow holder could drop a lock that already expired and was
re-acquired by another request.
"""

# Delete the lock only if it is still owned by the caller
RELEASE_LOCK_SCRIPT = """
local lock_key = KEYS[1]
local owner = ARGV[1]

if redis.call('GET', lock_key) == owner then
    return redis.call('DEL', lock_key)
end

return 0
"""
