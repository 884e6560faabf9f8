# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Collaborator tables owned by the school system.

The engine only reads these: which students are actively enrolled in a
class, which campus a class belongs to, who teaches it, and which account
a student profile belongs to.
"""

from sqlalchemy import Boolean, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from mastery_engine.infrastructure.database.models.base import Base, TimestampMixin

ENROLLMENT_ACTIVE = "active"


class StudentProfile(Base, TimestampMixin):
    __tablename__ = "student_profiles"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str | None] = mapped_column(String(64), nullable=True)


class SchoolClass(Base, TimestampMixin):
    __tablename__ = "classes"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    campus_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)


class ClassEnrollment(Base, TimestampMixin):
    __tablename__ = "class_enrollments"
    __table_args__ = (Index("ix_class_enrollments_student", "student_id"),)

    class_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    student_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=ENROLLMENT_ACTIVE)


class ClassTeacher(Base, TimestampMixin):
    __tablename__ = "class_teachers"

    class_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    teacher_account_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
