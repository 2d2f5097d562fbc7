"""initial_schema

Revision ID: 0001
Revises:
Create Date: 2026-10-19 09:12:40.118532

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '0001'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


ACTIVITIES_NEARBY_SQL = """
CREATE OR REPLACE FUNCTION activities_nearby(
    lat double precision,
    lng double precision,
    radius_m integer,
    limit_rows integer DEFAULT 50,
    types text[] DEFAULT NULL,
    tags text[] DEFAULT NULL
)
RETURNS TABLE (
    id varchar,
    name text,
    venue text,
    place_id varchar,
    place_label text,
    lat_out double precision,
    lng_out double precision,
    distance_m double precision,
    activity_types json,
    tags json,
    traits json
)
LANGUAGE sql STABLE AS $$
    SELECT * FROM (
        SELECT
            a.id, a.name, a.venue, a.place_id, a.place_label,
            a.lat AS lat_out, a.lng AS lng_out,
            2 * 6371000 * asin(sqrt(
                power(sin(radians(a.lat - $1) / 2), 2)
                + cos(radians($1)) * cos(radians(a.lat)) * power(sin(radians(a.lng - $2) / 2), 2)
            )) AS distance_m,
            a.activity_types, a.tags, a.traits
        FROM activities a
        WHERE a.lat IS NOT NULL AND a.lng IS NOT NULL
          AND ($5 IS NULL OR EXISTS (
              SELECT 1 FROM json_array_elements_text(a.activity_types) t WHERE t = ANY($5)))
          AND ($6 IS NULL OR EXISTS (
              SELECT 1 FROM json_array_elements_text(a.tags) t WHERE t = ANY($6)))
    ) candidates
    WHERE candidates.distance_m <= $3
    ORDER BY candidates.distance_m
    LIMIT $4
$$;
"""


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        'places',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('name', sa.Text(), nullable=True),
        sa.Column('address', sa.Text(), nullable=True),
        sa.Column('lat', sa.Float(), nullable=True),
        sa.Column('lng', sa.Float(), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_table(
        'activities',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('name', sa.Text(), nullable=False),
        sa.Column('venue', sa.Text(), nullable=True),
        sa.Column('lat', sa.Float(), sa.CheckConstraint('lat >= -90 AND lat <= 90'), nullable=True),
        sa.Column('lng', sa.Float(), sa.CheckConstraint('lng >= -180 AND lng <= 180'), nullable=True),
        sa.Column('activity_types', sa.JSON(), nullable=True),
        sa.Column('tags', sa.JSON(), nullable=True),
        sa.Column('traits', sa.JSON(), nullable=True),
        sa.Column('place_id', sa.String(36), sa.ForeignKey('places.id'), nullable=True),
        sa.Column('place_label', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_activities_lat_lng', 'activities', ['lat', 'lng'])

    op.create_table(
        'sessions',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('activity_id', sa.String(36), sa.ForeignKey('activities.id'), nullable=False),
        sa.Column('starts_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('ends_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('price_cents', sa.Integer(), nullable=True),
        sa.Column('max_attendees', sa.Integer(), nullable=True),
    )
    op.create_index('ix_sessions_activity_id', 'sessions', ['activity_id'])
    op.create_index('ix_sessions_starts_at', 'sessions', ['starts_at'])

    op.create_table(
        'activity_participant_preferences',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('activity_id', sa.String(36), sa.ForeignKey('activities.id'), nullable=False),
        sa.Column('user_id', sa.String(36), nullable=False),
        sa.Column('preferred_traits', sa.JSON(), nullable=True),
    )
    op.create_index(
        'ix_activity_participant_preferences_activity_id',
        'activity_participant_preferences',
        ['activity_id'],
    )

    op.create_table(
        'place_tiles',
        sa.Column('geohash6', sa.String(12), primary_key=True),
        sa.Column('discovery_cache', sa.JSON(), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        'venues',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('name', sa.Text(), nullable=True),
        sa.Column('address', sa.Text(), nullable=True),
        sa.Column('lat', sa.Float(), nullable=True),
        sa.Column('lng', sa.Float(), nullable=True),
        sa.Column('ai_activity_tags', sa.JSON(), nullable=True),
        sa.Column('verified_activities', sa.JSON(), nullable=True),
        sa.Column('raw_description', sa.Text(), nullable=True),
        sa.Column('raw_reviews', sa.JSON(), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_venues_lat_lng', 'venues', ['lat', 'lng'])

    # Provider caches
    for table, key, length in (('foursquare_cache', 'fsq_id', 64), ('google_places_cache', 'place_id', 255)):
        op.create_table(
            table,
            sa.Column(key, sa.String(length), primary_key=True),
            sa.Column('venue_id', sa.String(36), nullable=True),
            sa.Column('payload', sa.JSON(), nullable=False),
            sa.Column('fetched_at', sa.DateTime(timezone=True), nullable=False),
            sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        )

    # Reliability
    op.create_table(
        'events',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('starts_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('status', sa.String(32), nullable=True),
    )
    op.create_table(
        'event_participants',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('event_id', sa.String(36), sa.ForeignKey('events.id'), nullable=False),
        sa.Column('user_id', sa.String(36), nullable=False),
        sa.Column('role', sa.String(16), nullable=True),
        sa.Column('attendance', sa.String(16), nullable=True),
        sa.Column('punctuality', sa.String(16), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_event_participants_event_id', 'event_participants', ['event_id'])
    op.create_index('ix_event_participants_user_id', 'event_participants', ['user_id'])

    op.create_table(
        'reviews',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('reviewer_id', sa.String(36), nullable=False),
        sa.Column('reviewee_id', sa.String(36), nullable=False),
        sa.Column('stars', sa.Integer(), nullable=False),
        sa.Column('body', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_reviews_reviewer_id', 'reviews', ['reviewer_id'])
    op.create_index('ix_reviews_reviewee_id', 'reviews', ['reviewee_id'])

    op.create_table(
        'user_reputation',
        sa.Column('user_id', sa.String(36), primary_key=True),
        sa.Column('rep', sa.Float(), nullable=False, server_default='0.5'),
    )
    op.create_table(
        'reliability_metrics',
        sa.Column('user_id', sa.String(36), primary_key=True),
        sa.Column('window_30d_json', sa.JSON(), nullable=True),
        sa.Column('window_90d_json', sa.JSON(), nullable=True),
        sa.Column('lifetime_json', sa.JSON(), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_table(
        'reliability_index',
        sa.Column('user_id', sa.String(36), primary_key=True),
        sa.Column('score', sa.Float(), nullable=False, server_default='0'),
        sa.Column('confidence', sa.Float(), nullable=False, server_default='0'),
        sa.Column('components_json', sa.JSON(), nullable=True),
        sa.Column('last_recomputed', sa.DateTime(timezone=True), nullable=True),
    )

    op.execute(ACTIVITIES_NEARBY_SQL)


def downgrade() -> None:
    """Downgrade schema."""
    op.execute(
        "DROP FUNCTION IF EXISTS activities_nearby("
        "double precision, double precision, integer, integer, text[], text[])"
    )
    for table in (
        'reliability_index',
        'reliability_metrics',
        'user_reputation',
        'reviews',
        'event_participants',
        'events',
        'google_places_cache',
        'foursquare_cache',
        'venues',
        'place_tiles',
        'activity_participant_preferences',
        'sessions',
        'activities',
        'places',
    ):
        op.drop_table(table)
