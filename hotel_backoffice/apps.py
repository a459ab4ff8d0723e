from django.apps import AppConfig


class HotelBackofficeConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'hotel_backoffice'
    verbose_name = 'Hotel back office'
