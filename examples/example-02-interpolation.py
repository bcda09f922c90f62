import sqlbridge as sb

db = sb.connect("sqlite", private=True)
db.write_table("people", {"name": ["Hadley", "Jenny"], "age": [40, 35]})

print("===== Safe interpolation =====\n")
template = "SELECT * FROM people WHERE name = ?name"

# Regular input is simply quoted
query = db.interpolate(template, name="Hadley")
print(query)
print(db.query(query))
print()

# Hostile input cannot escape its string literal, since all single quotes are doubled
query = db.interpolate(template, name="H'); DROP TABLE people;--")
print(query)
print("Matching rows:", len(db.query(query)))
print("Table still exists:", db.exists_table("people"))
print()

print("===== Identifiers and trusted fragments =====\n")
# Table and column names are quoted as identifiers, SQL fragments are inserted as-is
query = sb.sql_interpolate(db, "SELECT ?column FROM ?table ORDER BY ?ordering LIMIT ?n",
                           column=sb.Identifier("name"), table=sb.Identifier("people"),
                           ordering=sb.SQL("age DESC"), n=1)
print(query)
print(db.execute_query(query))

db.close()
