from flask import jsonify, request
from flask_login import login_required

from ...engine import (
    UNSET, BulkImporter, CascadeDeleter, DeleteMode, Term, ValidationError,
    auto_assign_teachers, auto_enroll_for_semester, bulk_enroll_for_semester,
    course_enrollments, promote_student,
    assign_teacher, eligible_students, enroll_in_course, ensure_offering,
    import_order, unassign_teacher,
)
from ...engine.coerce import to_int
from ..auth.routes import role_required
from . import bp


def _json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


@bp.get("/import/order")
@login_required
@role_required("admin")
def import_table_order():
    return jsonify(tables=list(import_order()))


@bp.post("/import/<table>")
@login_required
@role_required("admin")
def import_table(table):
    importer = BulkImporter()
    upload = request.files.get("file")
    if upload is not None:
        result = importer.import_csv(table, upload.stream)
    else:
        data = request.get_json(silent=True)
        rows = data.get("rows") if isinstance(data, dict) else data
        if not isinstance(rows, list):
            raise ValidationError("Expected a CSV file or a JSON list of rows")
        result = importer.import_table(table, rows)
    return jsonify(result.to_dict())


@bp.get("/<root>/<int:rid>/dependents")
@login_required
@role_required("admin")
def root_dependents(root, rid):
    counts = CascadeDeleter().dependents(root, rid)
    return jsonify(root=root, id=rid, dependents=counts, can_delete=not counts)


@bp.delete("/<root>/<int:rid>")
@login_required
@role_required("admin")
def delete_root(root, rid):
    return jsonify(CascadeDeleter().delete(root, rid, DeleteMode.SAFE).to_dict())


@bp.delete("/<root>/<int:rid>/force")
@login_required
@role_required("admin")
def force_delete_root(root, rid):
    return jsonify(CascadeDeleter().delete(root, rid, DeleteMode.FORCED).to_dict())


@bp.post("/courses/<int:cid>/offerings")
@login_required
@role_required("admin")
def upsert_offering(cid):
    data = _json_body()
    term = Term(to_int(data.get("academic_year_id"), "academic_year_id"),
                to_int(data.get("semester"), "semester", default=1, minimum=1))
    result = ensure_offering(cid, term,
                             section=data["section_id"] if "section_id" in data else UNSET,
                             teacher=data["teacher_id"] if "teacher_id" in data else UNSET)
    o = result.row
    return jsonify(id=o.id, course_id=o.course_id, academic_year_id=o.academic_year_id,
                   semester=o.semester, section_id=o.section_id, teacher_id=o.teacher_id,
                   created=result.created, changed=list(result.changed)), 201 if result.created else 200


@bp.post("/courses/<int:cid>/enroll-students")
@login_required
@role_required("admin")
def enroll_students(cid):
    data = _json_body()
    student_ids = data.get("student_ids") or []
    if not isinstance(student_ids, list):
        raise ValidationError("student_ids must be a list")
    result = enroll_in_course(
        cid,
        year=to_int(data.get("year"), "year"),
        semester=to_int(data.get("semester"), "semester", minimum=1),
        student_ids=student_ids,
        teacher=to_int(data.get("teacher_id"), "teacher_id"),
        eligible_only=True,
    )
    return jsonify(success=True, **result.to_dict())


@bp.get("/courses/<int:cid>/eligible-students")
@login_required
@role_required("admin")
def course_eligible_students(cid):
    semester = to_int(request.args.get("semester"), "semester", minimum=1)
    if semester is None:
        raise ValidationError("semester is required")
    students = eligible_students(cid, semester)
    return jsonify(students=[
        {"id": s.id, "usn": s.usn, "name": s.user.name, "semester": s.semester,
         "department_id": s.department_id, "section_id": s.section_id}
        for s in students
    ])


@bp.post("/offerings/<int:oid>/teacher")
@login_required
@role_required("admin")
def set_offering_teacher(oid):
    data = _json_body()
    teacher_id = to_int(data.get("teacher_id"), "teacher_id")
    if teacher_id is None:
        raise ValidationError("teacher_id is required")
    o = assign_teacher(oid, teacher_id)
    return jsonify(success=True, id=o.id, teacher_id=o.teacher_id)


@bp.delete("/offerings/<int:oid>/teacher")
@login_required
@role_required("admin")
def clear_offering_teacher(oid):
    o, previous = unassign_teacher(oid)
    return jsonify(success=True, id=o.id, teacher_id=None, previous_teacher_id=previous)


@bp.post("/auto-assign-teachers")
@login_required
@role_required("admin")
def auto_assign_offering_teachers():
    data = request.get_json(silent=True) or {}
    college_id = to_int(data.get("college_id"), "college_id") if isinstance(data, dict) else None
    assignments = auto_assign_teachers(college_id)
    return jsonify(success=True, total_assigned=len(assignments), assignments=[
        {"offering_id": o.id, "course_code": o.course.code, "semester": o.semester,
         "section_id": o.section_id, "academic_year": o.academic_year.name,
         "teacher_id": t.id, "teacher_name": t.user.name}
        for o, t in assignments
    ])


@bp.get("/courses/<int:cid>/enrollments")
@login_required
@role_required("admin")
def list_course_enrollments(cid):
    semester = to_int(request.args.get("semester"), "semester", minimum=1)
    enrollments = course_enrollments(cid, year_name=request.args.get("year"), semester=semester)
    return jsonify(course_id=cid, total=len(enrollments), enrollments=[
        {"id": e.id, "attempt_number": e.attempt_number, "academic_year": e.academic_year.name,
         "offering_id": e.offering_id, "semester": e.offering.semester,
         "section_id": e.offering.section_id, "teacher_id": e.offering.teacher_id,
         "student": {"id": e.student.id, "usn": e.student.usn, "name": e.student.user.name,
                     "semester": e.student.semester, "department_code": e.student.department.code}}
        for e in enrollments
    ])


@bp.post("/students/<int:sid>/enroll/semester/<int:semester>")
@login_required
@role_required("admin")
def enroll_student_for_semester(sid, semester):
    result = auto_enroll_for_semester(sid, semester)
    return jsonify(result.to_dict()), 200 if result.success else 400


@bp.post("/students/<int:sid>/promote")
@login_required
@role_required("admin")
def promote(sid):
    result = promote_student(sid)
    return jsonify(result.to_dict()), 200 if result.success else 400


@bp.post("/students/bulk-enroll/semester/<int:semester>")
@login_required
@role_required("admin")
def bulk_enroll(semester):
    data = _json_body()
    student_ids = data.get("student_ids")
    if student_ids is not None and not isinstance(student_ids, list):
        raise ValidationError("student_ids must be a list")
    result = bulk_enroll_for_semester(semester, student_ids,
                                      department=to_int(data.get("department_id"), "department_id"),
                                      college=to_int(data.get("college_id"), "college_id"))
    return jsonify(success=True, **result.to_dict())
