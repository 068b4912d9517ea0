"""Initial schema: catalog, progress, achievements, XP functions and the progress trigger.

Revision ID: 001_initial_schema
Revises: None
Create Date: 2026-10-18
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_initial_schema"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- Users ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS users (
            id VARCHAR(36) PRIMARY KEY DEFAULT gen_random_uuid()::text,
            evm_address VARCHAR(64) UNIQUE NOT NULL,
            hedera_account_id VARCHAR(32) UNIQUE,
            username VARCHAR(64) UNIQUE NOT NULL,
            avatar_emoji VARCHAR(16),
            total_xp INTEGER NOT NULL DEFAULT 0,
            current_level INTEGER NOT NULL DEFAULT 1,
            current_streak INTEGER NOT NULL DEFAULT 0,
            longest_streak INTEGER NOT NULL DEFAULT 0,
            courses_completed INTEGER NOT NULL DEFAULT 0,
            lessons_completed INTEGER NOT NULL DEFAULT 0,
            badges_earned INTEGER NOT NULL DEFAULT 0,
            is_active BOOLEAN NOT NULL DEFAULT true,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_users_total_xp CHECK (total_xp >= 0),
            CONSTRAINT ck_users_level_range CHECK (current_level >= 1 AND current_level <= 100)
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS idx_users_total_xp ON users(total_xp DESC)")

    # --- Courses ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS courses (
            id VARCHAR(64) PRIMARY KEY,
            title VARCHAR(200) NOT NULL,
            description TEXT NOT NULL,
            thumbnail_emoji VARCHAR(16),
            track VARCHAR(16) NOT NULL,
            category VARCHAR(64) NOT NULL,
            difficulty VARCHAR(16) NOT NULL,
            estimated_hours NUMERIC(4,1) NOT NULL,
            total_lessons INTEGER NOT NULL DEFAULT 0,
            enrollment_count INTEGER NOT NULL DEFAULT 0,
            completion_count INTEGER NOT NULL DEFAULT 0,
            completion_xp INTEGER NOT NULL DEFAULT 100,
            is_published BOOLEAN NOT NULL DEFAULT true,
            is_featured BOOLEAN NOT NULL DEFAULT false,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS idx_courses_track ON courses(track)")

    op.execute("""
        CREATE TABLE IF NOT EXISTS course_prerequisites (
            id VARCHAR(36) PRIMARY KEY DEFAULT gen_random_uuid()::text,
            course_id VARCHAR(64) NOT NULL REFERENCES courses(id) ON DELETE CASCADE,
            prerequisite_course_id VARCHAR(64) NOT NULL REFERENCES courses(id) ON DELETE CASCADE,
            is_required BOOLEAN NOT NULL DEFAULT true,
            CONSTRAINT uq_course_prerequisite UNIQUE (course_id, prerequisite_course_id),
            CONSTRAINT ck_prerequisite_not_self CHECK (course_id != prerequisite_course_id)
        )
    """)

    # --- Lessons ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS lessons (
            id VARCHAR(64) PRIMARY KEY,
            course_id VARCHAR(64) NOT NULL REFERENCES courses(id) ON DELETE CASCADE,
            title VARCHAR(200) NOT NULL,
            lesson_type VARCHAR(16) NOT NULL,
            content JSONB NOT NULL DEFAULT '{}',
            sequence_number INTEGER NOT NULL,
            duration_minutes INTEGER NOT NULL DEFAULT 5,
            completion_xp INTEGER NOT NULL DEFAULT 10,
            perfect_score_xp INTEGER,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_lesson_course_sequence UNIQUE (course_id, sequence_number),
            CONSTRAINT ck_lesson_type CHECK (lesson_type IN ('text', 'interactive', 'quiz', 'practical'))
        )
    """)

    # --- Progress ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS user_progress (
            id VARCHAR(36) PRIMARY KEY DEFAULT gen_random_uuid()::text,
            user_id VARCHAR(36) NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            course_id VARCHAR(64) NOT NULL REFERENCES courses(id) ON DELETE CASCADE,
            enrollment_date TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            started_at TIMESTAMPTZ,
            completed_at TIMESTAMPTZ,
            last_accessed_at TIMESTAMPTZ,
            lessons_completed INTEGER NOT NULL DEFAULT 0,
            total_lessons INTEGER NOT NULL,
            progress_percentage NUMERIC(5,2) NOT NULL DEFAULT 0,
            current_lesson_id VARCHAR(64) REFERENCES lessons(id),
            updated_at TIMESTAMPTZ,
            CONSTRAINT uq_user_progress_user_course UNIQUE (user_id, course_id)
        )
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS lesson_completions (
            id VARCHAR(36) PRIMARY KEY DEFAULT gen_random_uuid()::text,
            user_id VARCHAR(36) NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            lesson_id VARCHAR(64) NOT NULL REFERENCES lessons(id) ON DELETE CASCADE,
            course_id VARCHAR(64) NOT NULL REFERENCES courses(id) ON DELETE CASCADE,
            completed_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            time_spent_seconds INTEGER,
            score_percentage NUMERIC(5,2),
            attempts INTEGER NOT NULL DEFAULT 1,
            xp_earned INTEGER NOT NULL,
            CONSTRAINT uq_lesson_completion_user_lesson UNIQUE (user_id, lesson_id)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_lesson_completions_user_course
        ON lesson_completions(user_id, course_id)
    """)

    # --- Achievements ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS achievements (
            id VARCHAR(64) PRIMARY KEY,
            name VARCHAR(128) NOT NULL,
            description TEXT NOT NULL,
            icon_emoji VARCHAR(16),
            category VARCHAR(16) NOT NULL,
            rarity VARCHAR(16) NOT NULL,
            criteria JSONB NOT NULL DEFAULT '{}',
            xp_reward INTEGER NOT NULL DEFAULT 50,
            times_earned INTEGER NOT NULL DEFAULT 0,
            is_active BOOLEAN NOT NULL DEFAULT true,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS user_achievements (
            id VARCHAR(36) PRIMARY KEY DEFAULT gen_random_uuid()::text,
            user_id VARCHAR(36) NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            achievement_id VARCHAR(64) NOT NULL REFERENCES achievements(id) ON DELETE CASCADE,
            earned_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_user_achievement UNIQUE (user_id, achievement_id)
        )
    """)

    # --- Level formula: floor(sqrt(xp / 100)), clamped to [1, 100] ---
    op.execute("""
        CREATE OR REPLACE FUNCTION calculate_user_level(xp INTEGER)
        RETURNS INTEGER AS $$
        BEGIN
            RETURN GREATEST(1, LEAST(FLOOR(SQRT(GREATEST(xp, 0) / 100.0))::INTEGER, 100));
        END;
        $$ LANGUAGE plpgsql IMMUTABLE
    """)

    # --- award_xp returns the new total so callers can tell it committed ---
    op.execute("""
        CREATE OR REPLACE FUNCTION award_xp(p_user_id VARCHAR, p_xp_amount INTEGER)
        RETURNS INTEGER AS $$
        DECLARE
            v_new_xp INTEGER;
        BEGIN
            UPDATE users
            SET total_xp = total_xp + p_xp_amount,
                current_level = calculate_user_level(total_xp + p_xp_amount),
                updated_at = NOW()
            WHERE id = p_user_id
            RETURNING total_xp INTO v_new_xp;

            IF NOT FOUND THEN
                RAISE EXCEPTION 'User not found: %', p_user_id;
            END IF;

            RETURN v_new_xp;
        END;
        $$ LANGUAGE plpgsql
    """)

    op.execute("""
        CREATE OR REPLACE FUNCTION increment_lessons_completed(p_user_id VARCHAR)
        RETURNS INTEGER AS $$
        DECLARE
            v_count INTEGER;
        BEGIN
            UPDATE users
            SET lessons_completed = lessons_completed + 1,
                updated_at = NOW()
            WHERE id = p_user_id
            RETURNING lessons_completed INTO v_count;

            IF NOT FOUND THEN
                RAISE EXCEPTION 'User not found: %', p_user_id;
            END IF;

            RETURN v_count;
        END;
        $$ LANGUAGE plpgsql
    """)

    op.execute("""
        CREATE OR REPLACE FUNCTION increment_enrollment_count(course_id_param VARCHAR)
        RETURNS INTEGER AS $$
        DECLARE
            v_count INTEGER;
        BEGIN
            UPDATE courses
            SET enrollment_count = enrollment_count + 1,
                updated_at = NOW()
            WHERE id = course_id_param
            RETURNING enrollment_count INTO v_count;

            IF NOT FOUND THEN
                RAISE EXCEPTION 'Course not found: %', course_id_param;
            END IF;

            RETURN v_count;
        END;
        $$ LANGUAGE plpgsql
    """)

    # --- Progress aggregate, recomputed on every completion insert ---
    op.execute("""
        CREATE OR REPLACE FUNCTION update_course_progress()
        RETURNS TRIGGER AS $$
        DECLARE
            v_total_lessons INTEGER;
            v_completed_lessons INTEGER;
            v_was_completed TIMESTAMPTZ;
        BEGIN
            SELECT COUNT(*) INTO v_total_lessons
            FROM lessons
            WHERE course_id = NEW.course_id;

            SELECT COUNT(*) INTO v_completed_lessons
            FROM lesson_completions
            WHERE user_id = NEW.user_id AND course_id = NEW.course_id;

            SELECT completed_at INTO v_was_completed
            FROM user_progress
            WHERE user_id = NEW.user_id AND course_id = NEW.course_id;

            UPDATE user_progress
            SET lessons_completed = v_completed_lessons,
                progress_percentage = CASE
                    WHEN v_total_lessons > 0 THEN v_completed_lessons * 100.0 / v_total_lessons
                    ELSE 0
                END,
                completed_at = CASE
                    WHEN v_total_lessons > 0 AND v_completed_lessons >= v_total_lessons
                        THEN COALESCE(completed_at, NOW())
                    ELSE completed_at
                END,
                updated_at = NOW()
            WHERE user_id = NEW.user_id AND course_id = NEW.course_id;

            IF v_total_lessons > 0
                AND v_completed_lessons >= v_total_lessons
                AND v_was_completed IS NULL
                AND FOUND THEN
                UPDATE users
                SET courses_completed = courses_completed + 1,
                    updated_at = NOW()
                WHERE id = NEW.user_id;

                UPDATE courses
                SET completion_count = completion_count + 1
                WHERE id = NEW.course_id;
            END IF;

            RETURN NEW;
        END;
        $$ LANGUAGE plpgsql
    """)
    op.execute("DROP TRIGGER IF EXISTS trigger_update_course_progress ON lesson_completions")
    op.execute("""
        CREATE TRIGGER trigger_update_course_progress
        AFTER INSERT ON lesson_completions
        FOR EACH ROW
        EXECUTE FUNCTION update_course_progress()
    """)


def downgrade() -> None:
    op.execute("DROP TRIGGER IF EXISTS trigger_update_course_progress ON lesson_completions")
    op.execute("DROP FUNCTION IF EXISTS update_course_progress()")
    op.execute("DROP FUNCTION IF EXISTS increment_enrollment_count(VARCHAR)")
    op.execute("DROP FUNCTION IF EXISTS increment_lessons_completed(VARCHAR)")
    op.execute("DROP FUNCTION IF EXISTS award_xp(VARCHAR, INTEGER)")
    op.execute("DROP FUNCTION IF EXISTS calculate_user_level(INTEGER)")
    op.execute("DROP TABLE IF EXISTS user_achievements CASCADE")
    op.execute("DROP TABLE IF EXISTS achievements CASCADE")
    op.execute("DROP TABLE IF EXISTS lesson_completions CASCADE")
    op.execute("DROP TABLE IF EXISTS user_progress CASCADE")
    op.execute("DROP TABLE IF EXISTS lessons CASCADE")
    op.execute("DROP TABLE IF EXISTS course_prerequisites CASCADE")
    op.execute("DROP TABLE IF EXISTS courses CASCADE")
    op.execute("DROP TABLE IF EXISTS users CASCADE")
