# Views Package
