from django.core.management.base import BaseCommand

from hotel_booking.models import Package, Room


class Command(BaseCommand):
    help = 'Populate database with sample rooms and packages'

    def handle(self, *args, **options):
        rooms_data = [
            {
                'name': 'Standard Room',
                'price': 8000,
                'capacity': 2,
                'amenities': ['Free WiFi', 'Air Conditioning', 'Flat-screen TV'],
                'description': 'Comfortable standard room with garden view'
            },
            {
                'name': 'Deluxe Room',
                'price': 12000,
                'capacity': 3,
                'amenities': ['Free WiFi', 'Air Conditioning', 'Mini Bar', 'Balcony'],
                'description': 'Spacious deluxe room with ocean view'
            },
            {
                'name': 'Family Suite',
                'price': 18000,
                'capacity': 4,
                'amenities': ['Free WiFi', 'Kitchenette', 'Two Bathrooms', 'Lounge Area'],
                'description': 'Large family suite with kitchenette'
            },
            {
                'name': 'Executive Suite',
                'price': 25000,
                'capacity': 2,
                'amenities': ['Free WiFi', 'Work Desk', 'Bathtub', 'Lounge Access'],
                'description': 'Executive suite with a private work area and lounge access'
            },
            {
                'name': 'Presidential Suite',
                'price': 35000,
                'capacity': 6,
                'amenities': ['Free WiFi', 'Private Pool', 'Butler Service', 'Panoramic View'],
                'description': 'Luxury presidential suite with all amenities'
            },
        ]

        packages_data = [
            {
                'name': 'Bed & Breakfast',
                'price_addon': 1000,
                'description': 'Start your day with our breakfast buffet featuring fresh local ingredients.'
            },
            {
                'name': 'Half Board',
                'price_addon': 2500,
                'description': 'Breakfast and dinner at our restaurant, leaving the day free to explore.'
            },
            {
                'name': 'All Inclusive',
                'price_addon': 4000,
                'description': 'All meals, snacks and select beverages throughout your stay.'
            },
            {
                'name': 'Honeymoon Package',
                'price_addon': 6000,
                'description': 'Champagne on arrival, a romantic dinner and a spa treatment for two.'
            },
            {
                'name': 'Business Package',
                'price_addon': 2000,
                'description': 'High-speed WiFi, business center access and complimentary breakfast.'
            },
        ]

        created_rooms = 0
        for room_data in rooms_data:
            room, created = Room.objects.get_or_create(
                name=room_data['name'],
                defaults=room_data
            )
            if created:
                created_rooms += 1
                self.stdout.write(f'Created room: {room.name}')
            else:
                self.stdout.write(f'Room already exists: {room.name}')

        created_packages = 0
        for package_data in packages_data:
            package, created = Package.objects.get_or_create(
                name=package_data['name'],
                defaults=package_data
            )
            if created:
                created_packages += 1
                self.stdout.write(f'Created package: {package.name}')
            else:
                self.stdout.write(f'Package already exists: {package.name}')

        self.stdout.write(
            self.style.SUCCESS(
                f'Successfully populated database: {created_rooms} rooms and {created_packages} packages created'
            )
        )
