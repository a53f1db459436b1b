from gateway.views.mailer import send_email as send_email
from gateway.views.module_handlers import list_modules as list_modules
from gateway.views.module_handlers import proxy as proxy
from gateway.views.module_handlers import public_proxy as public_proxy
from gateway.views.ops import about as about
from gateway.views.ops import info as info
from gateway.views.ops import ping as ping
from gateway.views.utils_handlers import hash_password as hash_password
from gateway.views.utils_handlers import random_key as random_key
