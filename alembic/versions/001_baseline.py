"""Baseline: progression schema.

Creates badge_tiers, users, points_ledger, the read-only content tables
(courses, lessons, quizzes, questions), enrollments, lesson_progress,
quiz_attempt_counters, quiz_attempts, course_stats and certificates.

Revision ID: 001_baseline
Revises:
Create Date: 2026-10-19
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_baseline"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- Badge catalog & users ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS badge_tiers (
            id SERIAL PRIMARY KEY,
            slug VARCHAR(32) UNIQUE NOT NULL,
            name VARCHAR(64) NOT NULL,
            points_required INTEGER UNIQUE NOT NULL,
            icon VARCHAR(16),
            sort_order INTEGER NOT NULL DEFAULT 0
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS users (
            id VARCHAR(64) PRIMARY KEY,
            email VARCHAR(320) UNIQUE,
            display_name VARCHAR(128),
            role VARCHAR(16) NOT NULL DEFAULT 'learner',
            total_points INTEGER NOT NULL DEFAULT 0 CHECK (total_points >= 0),
            current_badge_id INTEGER REFERENCES badge_tiers(id),
            created_at TIMESTAMPTZ DEFAULT NOW(),
            updated_at TIMESTAMPTZ
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_users_points
        ON users(total_points DESC)
    """)

    # --- Points ledger ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS points_ledger (
            id BIGSERIAL PRIMARY KEY,
            user_id VARCHAR(64) NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            amount INTEGER NOT NULL,
            reason_key VARCHAR(256) NOT NULL,
            source VARCHAR(32) NOT NULL,
            description VARCHAR(256),
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_points_ledger_user_reason UNIQUE (user_id, reason_key)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_points_ledger_user_time
        ON points_ledger(user_id, created_at DESC)
    """)

    # --- Content (owned by the content service) ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS courses (
            id VARCHAR(64) PRIMARY KEY,
            title VARCHAR(200) NOT NULL,
            instructor_id VARCHAR(64),
            published BOOLEAN NOT NULL DEFAULT true,
            created_at TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS lessons (
            id VARCHAR(64) PRIMARY KEY,
            course_id VARCHAR(64) NOT NULL REFERENCES courses(id) ON DELETE CASCADE,
            title VARCHAR(200) NOT NULL,
            lesson_type VARCHAR(16) NOT NULL DEFAULT 'video',
            "order" INTEGER NOT NULL DEFAULT 0
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_lessons_course_id ON lessons(course_id)")
    op.execute("""
        CREATE TABLE IF NOT EXISTS quizzes (
            id VARCHAR(64) PRIMARY KEY,
            course_id VARCHAR(64) NOT NULL REFERENCES courses(id) ON DELETE CASCADE,
            lesson_id VARCHAR(64),
            title VARCHAR(200) NOT NULL,
            pass_threshold INTEGER,
            reward_policy JSON
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_quizzes_course_id ON quizzes(course_id)")
    op.execute("""
        CREATE TABLE IF NOT EXISTS questions (
            id VARCHAR(64) PRIMARY KEY,
            quiz_id VARCHAR(64) NOT NULL REFERENCES quizzes(id) ON DELETE CASCADE,
            text TEXT NOT NULL,
            options JSON NOT NULL,
            points INTEGER NOT NULL DEFAULT 10,
            "order" INTEGER NOT NULL DEFAULT 0
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_questions_quiz_id ON questions(quiz_id)")

    # --- Learner state ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS enrollments (
            id VARCHAR(64) PRIMARY KEY,
            user_id VARCHAR(64) NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            course_id VARCHAR(64) NOT NULL REFERENCES courses(id) ON DELETE CASCADE,
            status VARCHAR(16) NOT NULL DEFAULT 'not_started',
            progress_percentage INTEGER NOT NULL DEFAULT 0,
            completed_lessons INTEGER NOT NULL DEFAULT 0,
            total_lessons INTEGER NOT NULL DEFAULT 0,
            enrolled_at TIMESTAMPTZ NOT NULL,
            started_at TIMESTAMPTZ,
            completed_at TIMESTAMPTZ,
            updated_at TIMESTAMPTZ,
            CONSTRAINT uq_enrollment_user_course UNIQUE (user_id, course_id),
            CONSTRAINT ck_enrollment_completed_full
                CHECK (status <> 'completed' OR progress_percentage = 100)
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_enrollments_course_id ON enrollments(course_id)")
    op.execute("""
        CREATE TABLE IF NOT EXISTS lesson_progress (
            id VARCHAR(64) PRIMARY KEY,
            user_id VARCHAR(64) NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            course_id VARCHAR(64) NOT NULL,
            lesson_id VARCHAR(64) NOT NULL,
            completed BOOLEAN NOT NULL DEFAULT false,
            viewed_at TIMESTAMPTZ NOT NULL,
            completed_at TIMESTAMPTZ,
            CONSTRAINT uq_lesson_progress_user_lesson UNIQUE (user_id, lesson_id)
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_lesson_progress_course_id ON lesson_progress(course_id)")

    # --- Quiz attempts ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS quiz_attempt_counters (
            user_id VARCHAR(64) NOT NULL,
            quiz_id VARCHAR(64) NOT NULL,
            last_attempt INTEGER NOT NULL DEFAULT 0,
            PRIMARY KEY (user_id, quiz_id)
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS quiz_attempts (
            id VARCHAR(64) PRIMARY KEY,
            user_id VARCHAR(64) NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            quiz_id VARCHAR(64) NOT NULL REFERENCES quizzes(id) ON DELETE CASCADE,
            course_id VARCHAR(64) NOT NULL,
            attempt_number INTEGER NOT NULL CHECK (attempt_number >= 1),
            raw_score INTEGER NOT NULL,
            total_questions INTEGER NOT NULL,
            percentage INTEGER NOT NULL,
            passed BOOLEAN NOT NULL,
            points_earned INTEGER NOT NULL,
            decay_factor DOUBLE PRECISION NOT NULL DEFAULT 1.0,
            answers JSON NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_quiz_attempt_number UNIQUE (user_id, quiz_id, attempt_number)
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_quiz_attempts_course_id ON quiz_attempts(course_id)")

    # --- Aggregates & certificates ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS course_stats (
            course_id VARCHAR(64) PRIMARY KEY REFERENCES courses(id) ON DELETE CASCADE,
            views_count INTEGER NOT NULL DEFAULT 0,
            enrollment_count INTEGER NOT NULL DEFAULT 0,
            completed_count INTEGER NOT NULL DEFAULT 0,
            completion_rate INTEGER NOT NULL DEFAULT 0,
            average_quiz_score INTEGER NOT NULL DEFAULT 0,
            total_quiz_attempts INTEGER NOT NULL DEFAULT 0,
            lesson_count INTEGER NOT NULL DEFAULT 0,
            updated_at TIMESTAMPTZ,
            reconciled_at TIMESTAMPTZ
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS certificates (
            id VARCHAR(64) PRIMARY KEY,
            certificate_number VARCHAR(64) UNIQUE NOT NULL,
            user_id VARCHAR(64) NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            course_id VARCHAR(64) NOT NULL REFERENCES courses(id) ON DELETE CASCADE,
            course_title VARCHAR(200) NOT NULL,
            user_name VARCHAR(320) NOT NULL,
            completed_at TIMESTAMPTZ,
            generated_at TIMESTAMPTZ NOT NULL,
            CONSTRAINT uq_certificate_user_course UNIQUE (user_id, course_id)
        )
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS certificates CASCADE")
    op.execute("DROP TABLE IF EXISTS course_stats CASCADE")
    op.execute("DROP TABLE IF EXISTS quiz_attempts CASCADE")
    op.execute("DROP TABLE IF EXISTS quiz_attempt_counters CASCADE")
    op.execute("DROP TABLE IF EXISTS lesson_progress CASCADE")
    op.execute("DROP TABLE IF EXISTS enrollments CASCADE")
    op.execute("DROP TABLE IF EXISTS questions CASCADE")
    op.execute("DROP TABLE IF EXISTS quizzes CASCADE")
    op.execute("DROP TABLE IF EXISTS lessons CASCADE")
    op.execute("DROP TABLE IF EXISTS courses CASCADE")
    op.execute("DROP TABLE IF EXISTS points_ledger CASCADE")
    op.execute("DROP TABLE IF EXISTS users CASCADE")
    op.execute("DROP TABLE IF EXISTS badge_tiers CASCADE")
