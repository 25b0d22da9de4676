from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand


class Command(BaseCommand):
    help = "Create the initial ADMIN user if it does not exist."

    def add_arguments(self, parser):
        parser.add_argument("--email", default="admin@tienda.com")
        parser.add_argument("--password", default="admin123")
        parser.add_argument("--name", default="Administrador")

    def handle(self, *args, email, password, name, **options):
        User = get_user_model()
        user, created = User.objects.get_or_create(
            email=email,
            defaults={"username": email, "name": name, "role": User.Role.ADMIN},
        )
        if created:
            user.set_password(password)
            user.save(update_fields=["password"])
            self.stdout.write(self.style.SUCCESS(f"admin created: {email}"))
        else:
            self.stdout.write(f"admin already exists: {email}")
