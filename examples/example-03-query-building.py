import sqlbridge as sb
from sqlbridge.qal import col, desc, func

db = sb.connect("duckdb", private=True)
db.write_table(
    "flights",
    {
        "carrier": ["AA", "AA", "UA", "UA", "DL", "DL", "DL"],
        "origin": ["JFK", "LGA", "EWR", "JFK", "JFK", "LGA", "LGA"],
        "dep_delay": [12, -3, 45, 8, 0, 31, -7],
        "distance": [1089, 733, 2565, 1416, 760, 1096, 502],
    },
)

flights = sb.qal.tbl(db, "flights")

print("===== Average delay per carrier =====\n")
delays = (
    flights.filter(col("dep_delay") > 0)
    .group_by("carrier")
    .summarize(mean_delay=func.avg(col("dep_delay")), flights=func.n())
    .arrange(desc("mean_delay"))
)
delays.show_query()
print(delays.collect())
print()

print("===== Computed columns =====\n")
# Filtering on a computed column requires a subquery, which is introduced automatically
long_haul = (
    flights.mutate(distance_km=col("distance") * 1.609)
    .filter(col("distance_km") > 1500)
    .select("carrier", "origin", "distance_km")
)
long_haul.show_query()
print(long_haul.collect())
print()

print("===== Counting =====\n")
busiest = flights.count("origin", sort=True).head(2)
busiest.show_query()
print(busiest.collect())

db.close()
