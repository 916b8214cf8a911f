class FakeRedis:
    """In-memory subset of redis.asyncio.Redis (decode_responses=True semantics)."""
    def __init__(self):
        self.kv = {}
        self.sets = {}
        self.hashes = {}
        self.closed = False

    async def get(self, key):
        return self.kv.get(key)

    async def set(self, key, value):
        self.kv[key] = str(value)
        return True

    async def delete(self, *keys):
        n = 0
        for k in keys:
            for store in (self.kv, self.sets, self.hashes):
                if store.pop(k, None) is not None:
                    n += 1
        return n

    async def sadd(self, key, *members):
        s = self.sets.setdefault(key, set())
        before = len(s)
        s.update(str(m) for m in members)
        return len(s) - before

    async def srem(self, key, *members):
        s = self.sets.get(key, set())
        n = sum(1 for m in members if str(m) in s)
        s.difference_update(str(m) for m in members)
        return n

    async def smembers(self, key):
        return set(self.sets.get(key, set()))

    async def sismember(self, key, member):
        return str(member) in self.sets.get(key, set())

    async def hset(self, key, field, value):
        h = self.hashes.setdefault(key, {})
        new = field not in h
        h[field] = str(value)
        return int(new)

    async def hdel(self, key, *fields):
        h = self.hashes.get(key, {})
        return sum(1 for f in fields if h.pop(f, None) is not None)

    async def hgetall(self, key):
        return dict(self.hashes.get(key, {}))

    async def hlen(self, key):
        return len(self.hashes.get(key, {}))

    async def aclose(self):
        self.closed = True
