"""Query text for the graph and relational stores."""

LESSONS_FOR_MATERIALS = """
MATCH (m:Material)-[:MAT_LES]->(l:Lesson)
WHERE m.id IN $material_ids
RETURN l.id AS lesson_id
"""

# No LIMIT here: ranking and truncation happen after profile enrichment.
ATTENDANCE_RATES = """
SELECT s.card_id AS student_id,
       COUNT(CASE WHEN a.status = true THEN 1 END)::float
           / NULLIF(COUNT(*), 0) AS attendance_rate
FROM attendance a
JOIN student s ON a.student_id = s.student_id
JOIN schedule sch ON a.schedule_id = sch.schedule_id
WHERE sch.lesson_id = ANY(:lesson_ids)
  AND sch.date BETWEEN :start_date AND :end_date
  AND s.group_id = sch.group_id
GROUP BY s.card_id
ORDER BY attendance_rate ASC
"""

DISCIPLINES_BETWEEN = """
SELECT DISTINCT l.discipline_id
FROM lesson l
JOIN schedule sch ON l.lesson_id = sch.lesson_id
WHERE sch.date BETWEEN :start_date AND :end_date
ORDER BY l.discipline_id
"""

# Attendance rows are counted distinctly because the equipment join repeats them;
# the FILTER drops the all-NULL row a session without attendance produces.
LECTURE_DETAILS = """
SELECT l.topic,
       l.type,
       sch.date,
       COUNT(DISTINCT (a.schedule_id, a.student_id))
           FILTER (WHERE a.student_id IS NOT NULL) AS student_count,
       array_agg(e.name) AS equipment
FROM lesson l
JOIN schedule sch ON l.lesson_id = sch.lesson_id
LEFT JOIN attendance a ON sch.schedule_id = a.schedule_id
LEFT JOIN equipment_requirements er ON l.lesson_id = er.lesson_id
LEFT JOIN equipment e ON er.equipment = e.id
WHERE l.discipline_id = :discipline_id
  AND sch.date BETWEEN :start_date AND :end_date
GROUP BY l.lesson_id, sch.date
ORDER BY sch.date
"""

SPECIAL_DISCIPLINES = """
SELECT DISTINCT c.discipline_id
FROM course c
JOIN lesson l ON c.discipline_id = l.discipline_id
JOIN schedule sch ON l.lesson_id = sch.lesson_id
WHERE c.is_special = true AND sch.group_id = :group_id
ORDER BY c.discipline_id
"""

# LEFT JOIN keeps a row for groups that have no students yet.
GROUP_ROSTER = """
SELECT g.group_id, s.card_id
FROM "group" g
LEFT JOIN student s ON g.group_id = s.group_id
WHERE g.name = :group_name
ORDER BY s.card_id
"""

PLANNED_SESSIONS = """
SELECT COUNT(*) AS sessions
FROM schedule sch
JOIN lesson l ON sch.lesson_id = l.lesson_id
WHERE l.discipline_id = :discipline_id AND sch.group_id = :group_id
"""

ATTENDED_SESSIONS = """
SELECT COUNT(*) AS sessions
FROM attendance a
JOIN schedule sch ON a.schedule_id = sch.schedule_id
JOIN lesson l ON sch.lesson_id = l.lesson_id
WHERE l.discipline_id = :discipline_id
  AND sch.group_id = :group_id
  AND a.status = true
  AND a.student_id = (SELECT student_id FROM student WHERE card_id = :student_id)
"""

GROUP_NAMES = 'SELECT name FROM "group" ORDER BY name'
