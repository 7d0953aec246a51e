"""
Management command to seed the geocoding cache from a JSON file.

The file holds a list of objects:
    [{"location_name": "Sidama", "country": "Ethiopia", "region": "Sidama",
      "latitude": 6.7, "longitude": 38.5, "bounding_box": null}, ...]

Existing keys are left untouched.

Usage:
    python manage.py seed_locations /path/to/locations.json
"""

import json

from django.core.management.base import BaseCommand, CommandError

from coffee_crawler.services.geocoding import get_geocode_resolver


class Command(BaseCommand):
    help = 'Seed LocationCoordinates from a JSON file'

    def add_arguments(self, parser):
        parser.add_argument('json_file', type=str, help='Path to JSON file with locations')

    def handle(self, *args, **options):
        json_file = options['json_file']

        try:
            with open(json_file, 'r', encoding='utf-8') as f:
                locations = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise CommandError(f"Cannot read {json_file}: {e}")

        if not isinstance(locations, list):
            raise CommandError("Expected a JSON array of locations")

        self.stdout.write(f"Found {len(locations)} locations in {json_file}")

        resolver = get_geocode_resolver()
        created = 0
        skipped = 0
        errors = 0

        for entry in locations:
            try:
                country = entry['country']
                was_created = resolver.seed_location(
                    location_name=entry.get('location_name') or country,
                    country=country,
                    region=entry.get('region'),
                    latitude=float(entry['latitude']),
                    longitude=float(entry['longitude']),
                    bounding_box=entry.get('bounding_box'),
                )
            except (KeyError, TypeError, ValueError) as e:
                self.stdout.write(self.style.ERROR(f"  Invalid entry {entry!r}: {e}"))
                errors += 1
                continue

            if was_created:
                created += 1
            else:
                skipped += 1

        self.stdout.write("")
        self.stdout.write("=" * 60)
        self.stdout.write("Seeding complete!")
        self.stdout.write(f"  Created: {created}")
        self.stdout.write(f"  Skipped: {skipped}")
        self.stdout.write(f"  Errors: {errors}")
