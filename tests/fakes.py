"""In-process stand-ins for a psycopg2 pool, connection and cursor."""


class FakeCursor:
    def __init__(self, conn):
        self.conn = conn
        self.rowcount = 0
        self._result = []

    def execute(self, sql, params=None):
        self.conn.executed.append((" ".join(sql.split()), params))
        statement = sql.strip().split()[0].upper()
        if "FROM order_tracking" in sql:
            self._result = [r for r in self.conn.tracking_rows if r[0] == params[0]]
        elif sql.strip().startswith("INSERT INTO order_tracking"):
            self.conn.tracking_rows.append(tuple(params))
            self.rowcount = 1
        elif statement == "INSERT":
            self.rowcount = self.conn.next_rowcount
            self._result = [(17,)] if self.conn.next_rowcount else []
        elif statement == "UPDATE":
            self.rowcount = self.conn.next_rowcount
        else:
            self._result = []

    def fetchall(self):
        return list(self._result)

    def fetchone(self):
        return self._result[0] if self._result else None

    def close(self):
        pass


class FakeConnection:
    def __init__(self):
        self.executed = []
        self.tracking_rows = []
        self.next_rowcount = 1
        self.commits = 0
        self.rollbacks = 0

    def cursor(self):
        return FakeCursor(self)

    def commit(self):
        self.commits += 1

    def rollback(self):
        self.rollbacks += 1


class FakePool:
    def __init__(self):
        self.conn = FakeConnection()

    def getconn(self):
        return self.conn

    def putconn(self, conn):
        pass

    def closeall(self):
        pass


