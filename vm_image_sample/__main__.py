import sys

from vm_image_sample.vm_image_manager import main

sys.exit(main())
