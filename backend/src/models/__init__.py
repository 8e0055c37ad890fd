from .models import RegistrationHandle, Subscriber, SubscriberRegistry
