"""initial teaching compensation schema

Revision ID: 3f1a9c0d2e7b
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f1a9c0d2e7b'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _created_at():
    return sa.Column('created_at', sa.DateTime(), nullable=False)


def upgrade() -> None:
    op.create_table(
        'academic_years',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('code', sa.String(length=20), nullable=False, unique=True),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        _created_at(),
        sa.CheckConstraint('end_date > start_date', name='ck_academic_year_range'),
    )
    op.create_table(
        'semesters',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('academic_year_id', sa.Integer(), sa.ForeignKey('academic_years.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('code', sa.String(length=20), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        _created_at(),
        sa.UniqueConstraint('academic_year_id', 'code', name='uq_semester_year_code'),
    )
    op.create_index('ix_semesters_academic_year_id', 'semesters', ['academic_year_id'])

    op.create_table(
        'departments',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('code', sa.String(length=20), nullable=False, unique=True),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        _created_at(),
    )
    op.create_table(
        'degrees',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('code', sa.String(length=20), nullable=False, unique=True),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('coefficient', sa.Numeric(6, 3), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        _created_at(),
    )
    op.create_table(
        'teachers',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('code', sa.String(length=20), nullable=False, unique=True),
        sa.Column('full_name', sa.String(length=200), nullable=False),
        sa.Column('email', sa.String(length=200)),
        sa.Column('department_id', sa.Integer(), sa.ForeignKey('departments.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('degree_id', sa.Integer(), sa.ForeignKey('degrees.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('position', sa.String(length=60)),
        sa.Column('years_of_service', sa.Integer(), nullable=False),
        sa.Column('standard_load_periods', sa.Numeric(8, 2), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        _created_at(),
    )
    op.create_index('ix_teachers_department_id', 'teachers', ['department_id'])

    subject_type = sa.Enum('general', 'major', 'specialization', 'elective', 'internship', name='subject_type_enum')
    op.create_table(
        'subjects',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('code', sa.String(length=15), nullable=False, unique=True),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('credits', sa.Numeric(4, 1), nullable=False),
        sa.Column('coefficient', sa.Numeric(6, 3), nullable=False),
        sa.Column('subject_type', subject_type, nullable=False),
        sa.Column('department_id', sa.Integer(), sa.ForeignKey('departments.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('period_minutes', sa.Integer(), nullable=False),
        sa.Column('lecture_periods', sa.Integer(), nullable=False),
        sa.Column('practice_periods', sa.Integer(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        _created_at(),
        sa.CheckConstraint('period_minutes > 0', name='ck_subject_period_minutes'),
    )

    class_type = sa.Enum('theory', 'practice', 'lab', 'seminar', 'online', name='class_type_enum')
    op.create_table(
        'classes',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('code', sa.String(length=30), nullable=False, unique=True),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('subject_id', sa.Integer(), sa.ForeignKey('subjects.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('semester_id', sa.Integer(), sa.ForeignKey('semesters.id'), nullable=True),
        sa.Column('student_count', sa.Integer(), nullable=False),
        sa.Column('max_students', sa.Integer(), nullable=False),
        sa.Column('class_type', class_type, nullable=False),
        sa.Column('class_coefficient', sa.Numeric(4, 2), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        _created_at(),
    )
    op.create_index('ix_classes_subject_id', 'classes', ['subject_id'])

    op.create_table(
        'teaching_assignments',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('code', sa.String(length=20), nullable=False, unique=True),
        sa.Column('teacher_id', sa.Integer(), sa.ForeignKey('teachers.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('class_id', sa.Integer(), sa.ForeignKey('classes.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('academic_year_id', sa.Integer(), sa.ForeignKey('academic_years.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('semester_id', sa.Integer(), sa.ForeignKey('semesters.id'), nullable=True),
        sa.Column('assignment_type', sa.Enum('primary', 'support', 'substitute', 'additional',
                                             name='assignment_type_enum'), nullable=False),
        sa.Column('status', sa.Enum('draft', 'assigned', 'confirmed', 'in_progress', 'completed', 'cancelled',
                                    name='assignment_status_enum'), nullable=False),
        sa.Column('lecture_hours', sa.Numeric(8, 2), nullable=False),
        sa.Column('practice_hours', sa.Numeric(8, 2), nullable=False),
        sa.Column('lab_hours', sa.Numeric(8, 2), nullable=False),
        sa.Column('other_hours', sa.Numeric(8, 2), nullable=False),
        sa.Column('holiday_hours', sa.Numeric(8, 2), nullable=False),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date(), nullable=False),
        sa.Column('notes', sa.String(length=1000)),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        _created_at(),
    )
    for col in ('teacher_id', 'class_id', 'academic_year_id', 'semester_id'):
        op.create_index(f'ix_teaching_assignments_{col}', 'teaching_assignments', [col])
    op.create_index('ix_assignments_teacher_period', 'teaching_assignments',
                    ['teacher_id', 'academic_year_id', 'semester_id', 'status'])

    op.create_table(
        'rate_settings',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('code', sa.String(length=30), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('rate_type', sa.Enum('base_hourly', 'overtime', 'holiday', 'bonus', 'allowance', 'coefficient',
                                       name='rate_type_enum'), nullable=False),
        sa.Column('applicable_scope', sa.Enum('university', 'department', 'degree', 'position', 'subject_type',
                                              'class_type', name='rate_scope_enum'), nullable=False),
        sa.Column('target_id', sa.Integer(), nullable=True),
        sa.Column('target_value', sa.String(length=60), nullable=True),
        sa.Column('base_amount', sa.Numeric(14, 2), nullable=False),
        sa.Column('minimum_rate', sa.Numeric(14, 2), nullable=False),
        sa.Column('maximum_rate', sa.Numeric(14, 2), nullable=True),
        sa.Column('coefficient', sa.Numeric(6, 3), nullable=False),
        sa.Column('step_increment', sa.Numeric(14, 2), nullable=False),
        sa.Column('formula_type', sa.Enum('fixed', 'per_period', name='rate_formula_enum'), nullable=False),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date(), nullable=True),
        sa.Column('academic_year_id', sa.Integer(), sa.ForeignKey('academic_years.id'), nullable=True),
        sa.Column('semester_id', sa.Integer(), sa.ForeignKey('semesters.id'), nullable=True),
        sa.Column('priority', sa.Integer(), nullable=False),
        sa.Column('status', sa.Enum('draft', 'pending_approval', 'approved', 'active', 'inactive', 'superseded',
                                    name='rate_status_enum'), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('supersedes_id', sa.Integer(), sa.ForeignKey('rate_settings.id'), nullable=True),
        sa.Column('approved_at', sa.DateTime()),
        sa.Column('description', sa.String(length=1000)),
        _created_at(),
    )
    op.create_index('ix_rate_settings_code', 'rate_settings', ['code'])
    op.create_index('ix_rate_settings_resolve', 'rate_settings',
                    ['rate_type', 'applicable_scope', 'status', 'start_date', 'end_date'])

    op.create_table(
        'period_rates',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('academic_year_id', sa.Integer(), sa.ForeignKey('academic_years.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('rate_per_period', sa.Numeric(14, 2), nullable=False),
        sa.Column('effective_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date(), nullable=True),
        sa.Column('approval_status', sa.Enum('draft', 'pending', 'approved', 'rejected',
                                             name='period_rate_approval_enum'), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('approved_at', sa.DateTime()),
        sa.Column('description', sa.String(length=1000)),
        _created_at(),
        sa.CheckConstraint('rate_per_period >= 0', name='ck_period_rate_non_negative'),
    )
    op.create_index('ix_period_rates_academic_year_id', 'period_rates', ['academic_year_id'])

    op.create_table(
        'salary_calculations',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('calculation_code', sa.String(length=40), nullable=False, unique=True),
        sa.Column('teacher_id', sa.Integer(), sa.ForeignKey('teachers.id'), nullable=False),
        sa.Column('period_type', sa.Enum('monthly', 'semester', 'academic_year', 'custom',
                                         name='calc_period_type_enum'), nullable=False),
        sa.Column('period_key', sa.String(length=80), nullable=False),
        sa.Column('academic_year_id', sa.Integer(), sa.ForeignKey('academic_years.id'), nullable=False),
        sa.Column('semester_id', sa.Integer(), sa.ForeignKey('semesters.id'), nullable=True),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date(), nullable=False),
        sa.Column('month', sa.Integer()),
        sa.Column('year', sa.Integer(), nullable=False),
        sa.Column('status', sa.Enum('draft', 'calculating', 'calculated', 'reviewing', 'approved', 'paid',
                                    'archived', name='calc_status_enum'), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('supersedes_id', sa.Integer(), sa.ForeignKey('salary_calculations.id'), nullable=True),
        sa.Column('assignment_count', sa.Integer(), nullable=False),
        sa.Column('total_hours', sa.Numeric(10, 2), nullable=False),
        sa.Column('total_periods', sa.Numeric(12, 4), nullable=False),
        sa.Column('base_periods', sa.Numeric(12, 4), nullable=False),
        sa.Column('overtime_periods', sa.Numeric(12, 4), nullable=False),
        sa.Column('total_students', sa.Integer(), nullable=False),
        sa.Column('total_credits', sa.Numeric(8, 1), nullable=False),
        sa.Column('base_amount', sa.BigInteger(), nullable=False),
        sa.Column('overtime_amount', sa.BigInteger(), nullable=False),
        sa.Column('holiday_amount', sa.BigInteger(), nullable=False),
        sa.Column('bonus_amount', sa.BigInteger(), nullable=False),
        sa.Column('allowance_amount', sa.BigInteger(), nullable=False),
        sa.Column('deduction_amount', sa.BigInteger(), nullable=False),
        sa.Column('gross_amount', sa.BigInteger(), nullable=False),
        sa.Column('net_amount', sa.BigInteger(), nullable=False),
        sa.Column('fingerprint', sa.String(length=64), nullable=False),
        sa.Column('calc_meta', sa.JSON()),
        sa.Column('audit_trail', sa.JSON()),
        sa.Column('calculated_at', sa.DateTime()),
        sa.Column('approved_at', sa.DateTime()),
        sa.Column('paid_at', sa.DateTime()),
        _created_at(),
        sa.UniqueConstraint('teacher_id', 'period_key', 'version', name='uq_salary_calc_version'),
    )
    op.create_index('ix_salary_calculations_teacher_id', 'salary_calculations', ['teacher_id'])
    op.create_index('ix_salary_calculations_period_key', 'salary_calculations', ['period_key'])

    op.create_table(
        'salary_calculation_lines',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('calculation_id', sa.Integer(), sa.ForeignKey('salary_calculations.id'), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('assignment_id', sa.Integer(), sa.ForeignKey('teaching_assignments.id'), nullable=True),
        sa.Column('kind', sa.Enum('base', 'overtime', 'holiday', 'bonus', 'allowance', 'deduction',
                                  name='calc_line_kind_enum'), nullable=False),
        sa.Column('quantity', sa.Numeric(12, 4), nullable=False),
        sa.Column('unit_rate', sa.Numeric(14, 2), nullable=False),
        sa.Column('coefficient', sa.Numeric(10, 6), nullable=False),
        sa.Column('rate_ref', sa.String(length=40)),
        sa.Column('amount', sa.BigInteger(), nullable=False),
        sa.Column('calc_trace_json', sa.JSON()),
    )
    op.create_index('ix_salary_calculation_lines_calculation_id', 'salary_calculation_lines', ['calculation_id'])

    op.create_table(
        'calculation_locks',
        sa.Column('teacher_id', sa.Integer(), nullable=False),
        sa.Column('period_key', sa.String(length=80), nullable=False),
        sa.Column('token', sa.String(length=36), nullable=False),
        sa.Column('acquired_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('teacher_id', 'period_key'),
    )


def downgrade() -> None:
    for table in ('calculation_locks', 'salary_calculation_lines', 'salary_calculations', 'period_rates',
                  'rate_settings', 'teaching_assignments', 'classes', 'subjects', 'teachers', 'degrees',
                  'departments', 'semesters', 'academic_years'):
        op.drop_table(table)

    bind = op.get_bind()
    for enum_name in ('calc_line_kind_enum', 'calc_status_enum', 'calc_period_type_enum',
                      'period_rate_approval_enum', 'rate_status_enum', 'rate_formula_enum', 'rate_scope_enum',
                      'rate_type_enum', 'assignment_status_enum', 'assignment_type_enum', 'class_type_enum',
                      'subject_type_enum'):
        try:
            sa.Enum(name=enum_name).drop(bind, checkfirst=True)
        except Exception:
            # sqlite has no named enum types
            pass
