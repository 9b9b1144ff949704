"""
Server-side Lua script for the Redis token bucket.

KEYS[1]  bucket key ("{prefix}:{identifier}")
ARGV     capacity, refill_rate, cost, now_ms, consume (0/1),
         return_state (0/1), ttl_seconds

Reply: {allowed, tokens} or {allowed, tokens, last_refill} when return_state
is 1. ``tokens`` is sent back as a string because Redis truncates Lua
numbers to integers in replies.

A key that has never been written is treated as a full bucket. The refilled
state is written back even on denial so refill progress is kept.
"""

TOKEN_BUCKET_LUA = """
local key = KEYS[1]
local capacity = tonumber(ARGV[1])
local refill_rate = tonumber(ARGV[2])
local cost = tonumber(ARGV[3])
local now_ms = tonumber(ARGV[4])
local consume = ARGV[5] == "1"
local return_state = ARGV[6] == "1"
local ttl_seconds = tonumber(ARGV[7])

if cost < 0 then
  return redis.error_reply("cost must be >= 0")
end

local data = redis.call("HMGET", key, "tokens", "lastRefill")
local tokens = tonumber(data[1])
local last_refill = tonumber(data[2])
if not tokens or not last_refill then
  tokens = capacity
  last_refill = now_ms
end

local elapsed_ms = now_ms - last_refill
if elapsed_ms > 0 then
  tokens = tokens + (elapsed_ms / 1000.0) * refill_rate
  if tokens > capacity then tokens = capacity end
  last_refill = now_ms
end

local allowed = 0
if tokens >= cost then
  allowed = 1
  if consume then
    tokens = tokens - cost
  end
end

redis.call("HSET", key, "tokens", tostring(tokens), "lastRefill", tostring(last_refill))
if ttl_seconds and ttl_seconds > 0 then
  redis.call("EXPIRE", key, ttl_seconds)
end

if return_state then
  return {allowed, tostring(tokens), last_refill}
end
return {allowed, tostring(tokens)}
"""
