from django.db import migrations

CREATE_CONSTRAINT = """
CREATE EXTENSION IF NOT EXISTS btree_gist;
ALTER TABLE bookings_booking
    ADD CONSTRAINT booking_no_confirmed_overlap
    EXCLUDE USING gist (
        provider_id WITH =,
        tstzrange(starts_at, ends_at, '[)') WITH &&
    )
    WHERE (status = 'CONFIRMED');
"""

DROP_CONSTRAINT = """
ALTER TABLE bookings_booking DROP CONSTRAINT IF EXISTS booking_no_confirmed_overlap;
"""


def add_overlap_exclusion(apps, schema_editor):
    if schema_editor.connection.vendor != "postgresql":
        return
    schema_editor.execute(CREATE_CONSTRAINT)


def remove_overlap_exclusion(apps, schema_editor):
    if schema_editor.connection.vendor != "postgresql":
        return
    schema_editor.execute(DROP_CONSTRAINT)


class Migration(migrations.Migration):

    dependencies = [
        ("bookings", "0001_initial"),
    ]

    operations = [
        migrations.RunPython(add_overlap_exclusion, remove_overlap_exclusion),
    ]
