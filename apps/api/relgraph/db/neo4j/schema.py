from __future__ import annotations

SCHEMA_STATEMENTS = [
    "CREATE CONSTRAINT person_id_unique IF NOT EXISTS FOR (p:Person) REQUIRE p.id IS UNIQUE",
    "CREATE CONSTRAINT company_id_unique IF NOT EXISTS FOR (c:Company) REQUIRE c.id IS UNIQUE",
    "CREATE CONSTRAINT school_id_unique IF NOT EXISTS FOR (s:School) REQUIRE s.id IS UNIQUE",
    "CREATE INDEX person_linkedin IF NOT EXISTS FOR (p:Person) ON (p.linkedin)",
    "CREATE INDEX person_name IF NOT EXISTS FOR (p:Person) ON (p.name)",
    "CREATE INDEX worked_at_id IF NOT EXISTS FOR ()-[r:WORKED_AT]-() ON (r.id)",
    "CREATE INDEX attended_school_id IF NOT EXISTS FOR ()-[r:ATTENDED_SCHOOL]-() ON (r.id)",
    "CREATE INDEX connected_via_mutual_id IF NOT EXISTS FOR ()-[r:CONNECTED_VIA_MUTUAL]-() ON (r.id)",
]
