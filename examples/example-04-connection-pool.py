import tempfile
import threading
from pathlib import Path

import sqlbridge as sb

# In-memory databases are private to each connection, so the pooled connections share a database file instead
db_file = Path(tempfile.mkdtemp()) / "requests.db"
pool = sb.create_pool("sqlite", database=db_file, settings=sb.PoolSettings(min_size=1, max_size=3))

pool.execute("CREATE TABLE requests (worker INTEGER, request INTEGER)")


def handle_requests(worker: int) -> None:
    for request in range(10):
        with pool.connection() as db:
            db.execute(db.interpolate("INSERT INTO requests VALUES (?worker, ?request)", worker=worker,
                                      request=request))


print("===== Serving concurrent requests =====\n")
workers = [threading.Thread(target=handle_requests, args=(idx,)) for idx in range(8)]
for worker in workers:
    worker.start()
for worker in workers:
    worker.join()

print("Handled requests:", pool.execute_query("SELECT COUNT(*) FROM requests"))
print("Pool utilization:", pool.info())
print()

print("===== Lazy tables on pools =====\n")
per_worker = sb.qal.tbl(pool, "requests").count("worker")
per_worker.show_query()
print(per_worker.collect())

pool.close()
