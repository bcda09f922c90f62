import sqlbridge as sb

# Every backend works the same way. Use sb.connect("postgres", config_file=...) or sb.connect("odbc", dsn=...) to talk
# to a different database system.
db = sb.connect("sqlite", database=":memory:")

print("===== Writing tables =====\n")
db.write_table(
    "city",
    {
        "name": ["Berlin", "Paris", "Rome", "Madrid"],
        "country": ["DEU", "FRA", "ITA", "ESP"],
        "population": [3_645_000, 2_161_000, 2_873_000, 3_305_000],
    },
)
db.write_table("country", [{"code": "DEU", "name": "Germany"}, {"code": "FRA", "name": "France"}])

for table in db.list_tables():
    print(f"- {table} [{', '.join(db.list_fields(table))}]")
print()

print("===== Querying =====\n")
# query() provides data frames, execute_query() provides plain (simplified) result sets
print(db.query("SELECT name, population FROM city ORDER BY population DESC"))
print()
print("Number of cities:", db.execute_query("SELECT COUNT(*) FROM city"))
print("Largest city:", db.execute_query("SELECT name, population FROM city ORDER BY population DESC LIMIT 1"))
print()

print("===== Transactions =====\n")
try:
    with db.transaction():
        db.execute("DELETE FROM city")
        db.execute("SELECT * FROM no_such_table")
except sb.DatabaseUserError as e:
    print("Transaction failed and was rolled back:", e.ctx)
print("Cities after the rollback:", db.execute_query("SELECT COUNT(*) FROM city"))
print()

print("===== Connection metadata =====\n")
print(db.describe())

db.disconnect()
